import logging_setup


def test_logger_is_configured_once():
    first = logging_setup.get_logger()
    second = logging_setup.get_logger()
    assert first is second
    assert first.name == "elibrary"
    assert first.propagate is False
    assert len(first.handlers) == 1
    assert first.handlers[0].formatter._fmt.startswith("[elibrary]")
