import logging

from nodething.utils import setup_logging


def test_setup_logging_writes_file(tmp_path):
    log_file = tmp_path / "logs" / "device.log"
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    try:
        setup_logging("DEBUG", str(log_file))
        logging.getLogger("nodething.test").info("hello from the device")
        for handler in root.handlers:
            handler.flush()
        assert log_file.exists()
        assert "hello from the device" in log_file.read_text()
    finally:
        for handler in root.handlers[:]:
            if handler not in before:
                root.removeHandler(handler)
                handler.close()
        root.setLevel(level)
