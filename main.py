import uvicorn

from farmhub.config import get_config
from farmhub.logging_utils import init_logging
from farmhub.main import app


if __name__ == "__main__":
    init_logging(log_path=get_config().log_path)
    uvicorn.run(app, host="0.0.0.0", port=get_config().port)
