import argparse
import logging

import uvicorn

from .config_manager import get_config
from .log_config import setup_logging
from .main import create_app


def main(argv=None):
    config = get_config()
    server_config = config.get_server_config()

    parser = argparse.ArgumentParser(description="SolHub real-time chat server")
    parser.add_argument('--host', type=str, default=server_config.get('host'), help='Address to listen on')
    parser.add_argument('--port', type=int, default=server_config.get('port'), help='Port to listen on')
    parser.add_argument('--mongodb-uri', type=str, default=None, help='MongoDB connection string')
    args = parser.parse_args(argv)

    if args.mongodb_uri:
        config.update_config('database', 'uri', args.mongodb_uri)

    logger = setup_logging(config)
    logger.info(f"Server running on port {args.port}")
    logger.info(f"MongoDB URI: {config.get_database_config().get('uri')}")

    app = create_app(config=config)
    uvicorn.run(app, host=args.host, port=args.port, log_level=logging.getLevelName(logger.level).lower())


if __name__ == "__main__":
    main()
