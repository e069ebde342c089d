from loggers.logger_setup import build_logger

sbom_parser_logger = build_logger(__name__, "sbom_parser.log")
