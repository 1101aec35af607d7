import unittest

from fakes import TempDirTestCase
from segsub.model_catalog import AVAILABLE_MODELS, find_model, installed_models, model_filename


class TestModelCatalog(unittest.TestCase):

    def test_tiers_are_ordered_smallest_first(self):
        self.assertEqual([m.name for m in AVAILABLE_MODELS], ["tiny", "base", "small", "medium", "large"])
        sizes = [m.size_mb for m in AVAILABLE_MODELS]
        self.assertEqual(sizes, sorted(sizes))

    def test_lookup_by_name_or_filename(self):
        self.assertEqual(find_model("Small").filename, "ggml-small.bin")
        self.assertEqual(find_model("ggml-large-v3.bin").name, "large")
        self.assertIsNone(find_model("huge"))

    def test_model_filename(self):
        self.assertEqual(model_filename("large"), "ggml-large-v3.bin")
        self.assertEqual(model_filename("/somewhere/ggml-base.en.bin"), "ggml-base.en.bin")

    def test_download_url_points_at_the_file(self):
        url = find_model("tiny").url
        self.assertTrue(url.startswith("https://"))
        self.assertTrue(url.endswith("/ggml-tiny.bin"))


class TestInstalledModels(TempDirTestCase):

    def test_installed_models_are_listed_in_tier_order(self):
        self.write("models/ggml-medium.bin", b"ggml")
        self.write("models/ggml-base.bin", b"ggml")
        self.assertEqual([m.name for m in installed_models(self.path("models"))], ["base", "medium"])


if __name__ == "__main__":
    unittest.main()
