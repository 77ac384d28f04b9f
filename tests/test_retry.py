import pytest

from dnsforward.retry import BindRetryConfig, bind_with_retry


def _flaky(failures):
    calls = []

    def bind():
        calls.append(len(calls))
        if len(calls) <= failures:
            raise OSError(f"address in use {len(calls)}")
        return "listener"

    return bind, calls


def test_success_first_try():
    bind, calls = _flaky(0)
    assert bind_with_retry(bind, 3, 0) == "listener"
    assert len(calls) == 1


def test_success_after_retries():
    bind, calls = _flaky(2)
    assert bind_with_retry(bind, 3, 0) == "listener"
    assert len(calls) == 3


def test_no_retries_raises():
    bind, calls = _flaky(1)
    with pytest.raises(OSError, match="address in use 1"):
        bind_with_retry(bind, 0, 0)
    assert len(calls) == 1


def test_exhausted_raises_first_error():
    bind, calls = _flaky(10)
    with pytest.raises(OSError, match="address in use 1"):
        bind_with_retry(bind, 2, 0)
    assert len(calls) == 3


def test_config_defaults_and_validation():
    conf = BindRetryConfig()
    assert (conf.interval, conf.count, conf.enabled) == (0.0, 0, False)
    with pytest.raises(ValueError):
        BindRetryConfig(interval=-1.0, count=1, enabled=True)
    assert BindRetryConfig(interval=-1.0).interval == -1.0