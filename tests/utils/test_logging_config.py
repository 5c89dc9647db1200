import logging

from sofapy.utils.logging_config import get_logger, setup_logging


def test_loggers_live_under_package_namespace():
    assert get_logger('utils.sofa.core').name == 'sofapy.utils.sofa.core'
    assert get_logger('sofapy.utils.io').name == 'sofapy.utils.io'
    assert get_logger('sofapy').name == 'sofapy'


def test_package_logger_has_null_handler():
    import sofapy  # noqa: F401

    handlers = logging.getLogger('sofapy').handlers
    assert any(isinstance(h, logging.NullHandler) for h in handlers)


def test_setup_logging_keeps_existing_handlers(monkeypatch):
    root = logging.getLogger()
    monkeypatch.setattr(root, 'level', root.level)
    handlers = list(root.handlers)

    setup_logging("debug")

    assert root.level == logging.DEBUG
    assert root.handlers == handlers
