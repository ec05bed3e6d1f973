import signal

import pytest

from canarykit.signals import setup_signal_handler, shutdown_signals


@pytest.fixture
def restore_handlers():
    saved = {sig: signal.getsignal(sig) for sig in shutdown_signals()}
    yield
    for sig, handler in saved.items():
        signal.signal(sig, handler)


def test_shutdown_signals_include_interrupt():
    signals = shutdown_signals()
    assert signals[0] == signal.SIGINT
    assert all(isinstance(s, signal.Signals) for s in signals)


def test_setup_signal_handler(restore_handlers):
    stop = setup_signal_handler()
    assert not stop.is_set()
    signal.raise_signal(signal.SIGINT)
    assert stop.is_set()
    with pytest.raises(RuntimeError):
        setup_signal_handler()