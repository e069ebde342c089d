from loggers.logger_setup import build_logger

relationship_resolver_logger = build_logger(__name__, "relationship_resolver.log")
