#!/usr/bin/env python3
"""
Ticket Printer - Flask service that prints ticket receipts on BLE thermal printers.

Host/port come from TICKETPRINTER_HOST / TICKETPRINTER_PORT.
"""

import argparse
import os

from ticket_printer import create_app


def main() -> None:
    parser = argparse.ArgumentParser(description="Ticket Printer service")
    parser.add_argument("--host", default=os.environ.get("TICKETPRINTER_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.environ.get("TICKETPRINTER_PORT", "5000")))
    args = parser.parse_args()

    app = create_app()
    app.logger.info("Starting Ticket Printer on http://%s:%d", args.host, args.port)
    app.logger.info("Press Ctrl+C to stop the server")
    app.run(host=args.host, port=args.port, debug=False, threaded=True)


if __name__ == "__main__":
    main()
