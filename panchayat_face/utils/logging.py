import logging
from panchayat_face.config.paths import LOG_DIR
from panchayat_face.config.settings import LOG_LEVEL

def setup_logger():
    logger = logging.getLogger("PanchayatFace")
    logger.setLevel(LOG_LEVEL)
    # Attach the file handler once; every class calls setup_logger()
    if not logger.handlers:
        file_handler = logging.FileHandler(LOG_DIR / "system.log")
        formatter = logging.Formatter(
            "%(asctime)s - %(levelname)s - %(message)s"
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    return logger
