import re
from urllib.parse import unquote, urlparse

_PROFILE_PATH_RE = re.compile(r"^/in/([^/]+)")


def clean_linkedin_url(url: str | None) -> str:
    """Normalize a LinkedIn profile URL to ``https://www.linkedin.com/in/<slug>``.

    Drops the query string, fragment, trailing slash, and any sub-path after the
    slug, and lowercases the result. Country subdomains (``uk.linkedin.com``)
    collapse to ``www``. Anything that is not a profile URL comes back trimmed
    and lowercased but otherwise untouched.
    """
    raw = (url or "").strip()
    if not raw:
        return ""
    if not re.match(r"^https?://", raw, flags=re.IGNORECASE):
        raw = "https://" + raw
    parsed = urlparse(raw)
    host = (parsed.hostname or "").lower()
    if host != "linkedin.com" and not host.endswith(".linkedin.com"):
        return (url or "").strip().lower()

    m = _PROFILE_PATH_RE.match(parsed.path or "")
    if not m:
        return f"https://www.linkedin.com{(parsed.path or '').rstrip('/')}".lower()
    slug = unquote(m.group(1)).strip().lower()
    return f"https://www.linkedin.com/in/{slug}"


def is_linkedin_profile_url(url: str | None) -> bool:
    cleaned = clean_linkedin_url(url)
    return cleaned.startswith("https://www.linkedin.com/in/") and len(cleaned) > len("https://www.linkedin.com/in/")


def profile_slug(url: str | None) -> str | None:
    cleaned = clean_linkedin_url(url)
    if not is_linkedin_profile_url(cleaned):
        return None
    return cleaned.rsplit("/", 1)[-1]
