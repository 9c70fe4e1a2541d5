#!/usr/bin/env python3
"""Launch the restream manager API server.

Usage:
    ./start_restream.py                      # Serve on 127.0.0.1:8765
    ./start_restream.py --port 8080          # Use custom port
    ./start_restream.py --ffmpeg /opt/ffmpeg # Use a specific ffmpeg binary
"""

import argparse
import logging
import os
import sys


def main():
    parser = argparse.ArgumentParser(description="Launch the restream manager API server")
    parser.add_argument("--port", type=int, default=8765, help="Server port (default: 8765)")
    parser.add_argument("--host", default="127.0.0.1", help="Server host (default: 127.0.0.1)")
    parser.add_argument("--ffmpeg", help="Path to the ffmpeg binary (overrides RESTREAM_FFMPEG_PATH)")
    parser.add_argument("--data-dir", help="Where stream databases and logs live (overrides RESTREAM_DATA_DIR)")
    parser.add_argument("--rtmp-url", help="RTMP ingest base URL (overrides RESTREAM_RTMP_URL)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    # Check for required dependencies
    try:
        import uvicorn
    except ImportError:
        print("""
ERROR: Server dependencies not installed.

Install them with:
    pip install -e .
""")
        sys.exit(1)

    # Must be set before restream.config is imported by the server
    if args.ffmpeg:
        os.environ["RESTREAM_FFMPEG_PATH"] = args.ffmpeg
    if args.data_dir:
        os.environ["RESTREAM_DATA_DIR"] = args.data_dir
    if args.rtmp_url:
        os.environ["RESTREAM_RTMP_URL"] = args.rtmp_url

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    url = f"http://{args.host}:{args.port}"

    print(f"""
╔════════════════════════════════════════════════════════╗
║           Restream Manager                             ║
╠════════════════════════════════════════════════════════╣
║                                                        ║
║   API running at: {url:<32} ║
║                                                        ║
║   Press Ctrl+C to stop (live streams are stopped too)  ║
║                                                        ║
╚════════════════════════════════════════════════════════╝
""")

    uvicorn.run("restream.server:app", host=args.host, port=args.port, reload=False, log_config=None)


if __name__ == "__main__":
    main()
