from loggers.logger_setup import build_logger

archive_downloader_logger = build_logger(__name__, "archive_downloader.log")
