import pytest

from pagewatch.core.exceptions import UnsafeURLError
from pagewatch.utils.url_safety import check_url, ensure_public_url, is_private_address


@pytest.mark.parametrize("address, private", [
    ("127.0.0.1", True),
    ("10.1.2.3", True),
    ("192.168.0.10", True),
    ("169.254.169.254", True),
    ("0.0.0.0", True),
    ("::1", True),
    ("::ffff:10.0.0.1", True),
    ("fd00::1", True),
    ("93.184.216.34", False),
    ("2606:4700::1111", False),
    ("example.com", False),
])
def test_is_private_address(address, private):
    assert is_private_address(address) is private


@pytest.mark.parametrize("url, reason", [
    ("ftp://example.com/file", "Only http and https URLs are allowed"),
    ("file:///etc/passwd", "Only http and https URLs are allowed"),
    ("http://", "Invalid URL format"),
    ("http://localhost:8000/", "This hostname is not allowed"),
    ("http://metadata.google.internal/", "This hostname is not allowed"),
    ("http://printer.local/", "Internal hostnames are not allowed"),
    ("http://127.0.0.1/admin", "Private or internal IP addresses are not allowed"),
    ("http://[::1]/", "Private or internal IP addresses are not allowed"),
    ("https://93.184.216.34/", None),
])
async def test_check_url_without_dns(url, reason):
    assert await check_url(url, resolve=False) == reason


async def test_check_url_ip_literal_needs_no_dns():
    assert await check_url("https://93.184.216.34/page") is None


async def test_ensure_public_url_raises():
    with pytest.raises(UnsafeURLError) as exc_info:
        await ensure_public_url("http://10.0.0.5/", resolve=False)
    assert str(exc_info.value) == "SSRF blocked: Private or internal IP addresses are not allowed"
