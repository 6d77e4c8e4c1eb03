import unittest

from app.services.linkedin_urls import clean_linkedin_url, is_linkedin_profile_url, profile_slug


class TestLinkedinUrls(unittest.TestCase):
    def test_clean_profile_variants(self):
        expected = "https://www.linkedin.com/in/ada-lovelace"
        for raw in (
            "https://www.linkedin.com/in/ada-lovelace/",
            "http://linkedin.com/in/Ada-Lovelace?trk=public_profile",
            "uk.linkedin.com/in/ada-lovelace/details/experience/",
            "  https://www.linkedin.com/in/ada-lovelace#about  ",
        ):
            self.assertEqual(clean_linkedin_url(raw), expected, raw)

    def test_percent_encoded_slug(self):
        self.assertEqual(
            clean_linkedin_url("https://www.linkedin.com/in/jos%C3%A9-garc%C3%ADa"),
            "https://www.linkedin.com/in/josé-garcía",
        )

    def test_non_profile_urls(self):
        self.assertFalse(is_linkedin_profile_url("https://www.linkedin.com/company/acme"))
        self.assertFalse(is_linkedin_profile_url("https://example.com/in/ada"))
        self.assertFalse(is_linkedin_profile_url("https://www.linkedin.com/in/"))
        self.assertFalse(is_linkedin_profile_url(""))
        self.assertEqual(clean_linkedin_url(None), "")

    def test_profile_slug(self):
        self.assertEqual(profile_slug("linkedin.com/in/Ada-Lovelace/"), "ada-lovelace")
        self.assertIsNone(profile_slug("https://www.linkedin.com/company/acme"))


if __name__ == "__main__":
    unittest.main()
