import logging
from pathlib import Path
from configuration import Configuration as Config

# Create a logging format
formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')


def build_logger(name: str, log_file_name: str) -> logging.Logger:
    """
    Create a component logger writing INFO+ to logs/<log_file_name> and DEBUG+ to the console.

    Safe to call more than once for the same name; handlers are only attached the first time.
    """
    # Create a custom logger
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)  # Set the minimum logging level
    if logger.handlers:
        return logger

    # Create handlers for file and console
    Path(Config.log_dir).mkdir(parents=True, exist_ok=True)
    file_handler_path = Path(Config.log_dir, log_file_name)
    file_handler = logging.FileHandler(file_handler_path, mode='w', encoding="utf-8")
    console_handler = logging.StreamHandler()

    # Set the logging level for each handler
    file_handler.setLevel(logging.INFO)
    console_handler.setLevel(logging.DEBUG)

    file_handler.setFormatter(formatter)
    console_handler.setFormatter(formatter)

    # Add the handlers to the logger
    logger.addHandler(file_handler)
    logger.addHandler(console_handler)
    return logger
