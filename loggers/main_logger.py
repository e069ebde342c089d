from loggers.logger_setup import build_logger

main_logger = build_logger(__name__, "main.log")
