import pytest

from simplesite.util import BaseURL, BufferPool, parse_uuid, random_hex, utcnow_iso


@pytest.mark.parametrize("length", [1, 16, 31, 32, 64])
def test_random_hex_length(length):
    value = random_hex(length)

    assert len(value) == length
    int(value, 16)


def test_random_hex_is_random():
    assert len({random_hex(32) for _ in range(100)}) == 100


def test_buffer_pool_returns_empty_buffers():
    pool = BufferPool(size=2)

    with pool.acquire() as buf:
        buf.write("secret")
    with pool.acquire() as buf:
        assert buf.getvalue() == ""


def test_buffer_pool_is_bounded():
    pool = BufferPool(size=1)

    with pool.acquire(), pool.acquire():
        pass

    assert len(pool) == 1


def test_buffer_is_reset_after_error():
    pool = BufferPool(size=1)

    with pytest.raises(RuntimeError):
        with pool.acquire() as buf:
            buf.write("partial")
            raise RuntimeError("boom")

    with pool.acquire() as buf:
        assert buf.getvalue() == ""


def test_parse_uuid():
    assert parse_uuid("3F1C2A9E-8A51-4F0E-9A55-6A3C1F1F0B10") == "3f1c2a9e-8a51-4f0e-9a55-6a3c1f1f0b10"
    with pytest.raises(ValueError):
        parse_uuid("not-a-uuid")


def test_base_url_path():
    assert BaseURL("https://example.com").path("/verify/", "abc", "def") == "https://example.com/verify/abc/def"
    assert BaseURL("https://example.com/site").path("verify", "x") == "https://example.com/site/verify/x"


def test_utcnow_iso_sorts_chronologically():
    first = utcnow_iso()
    second = utcnow_iso()

    assert first.endswith("+00:00")
    assert first <= second
