import argparse

import uvicorn


def main(args):
    uvicorn.run("ephemera:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Ephemera: decrypted temporary file provider")
    parser.add_argument("--host", "-H", type=str,
                        default="0.0.0.0", help="Host to run the server on")
    parser.add_argument("--port", "-p", type=int,
                        default=8000, help="Port to run the server on")
    parser.add_argument("--reload", action="store_true",
                        help="Reload on code changes (development only)")
    args = parser.parse_args()

    main(args)
