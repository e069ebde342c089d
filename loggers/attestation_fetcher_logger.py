from loggers.logger_setup import build_logger

attestation_fetcher_logger = build_logger(__name__, "attestation_fetcher.log")
