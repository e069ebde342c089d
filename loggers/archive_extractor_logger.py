from loggers.logger_setup import build_logger

archive_extractor_logger = build_logger(__name__, "archive_extractor.log")
