import logging
from datetime import datetime, timezone

from jobqueue.core.logger import FileLogFormatter, info, setup_logging, warning


def test_context_is_attached_to_record(caplog):
    logger = setup_logging(log_level="DEBUG", app_name="test-context", to_file=False)

    with caplog.at_level(logging.INFO, logger="test-context"):
        info(logger, "Job claimed", context={"job_id": 7})
        warning(logger, "No context")

    assert caplog.records[0].context == {"job_id": 7}
    assert not hasattr(caplog.records[1], "context")


def test_file_format_renders_context_as_json():
    record = logging.LogRecord("worker", logging.INFO, __file__, 1, "Job completed", None, None)
    record.context = {"job_id": 7, "at": datetime(2026, 1, 1, tzinfo=timezone.utc)}

    rendered = FileLogFormatter().format(record)

    assert "INFO (worker): Job completed" in rendered
    assert '"job_id": 7' in rendered
    assert '"at": "2026-01-01 00:00:00+00:00"' in rendered


def test_file_handler_writes_daily_log(tmp_path):
    logger = setup_logging(log_dir=str(tmp_path), app_name="test-file")
    info(logger, "written")
    for handler in logger.handlers:
        handler.flush()

    log_files = list(tmp_path.glob("test-file-*.log"))
    assert len(log_files) == 1
    assert "written" in log_files[0].read_text()
