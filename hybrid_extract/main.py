"""
Hybrid Extract - IPC entry point
Reads one JSON command per line from stdin and writes JSON events to stdout.

Commands:
    {"command": "extract", "request_id": "1", "file_path": "a.pdf", "options": {...}}
    {"command": "check_needs_ocr", "request_id": "2", "file_path": "a.pdf"}
    {"command": "capabilities"}
    {"command": "validate_config"}
    {"command": "cancel"}

Events:
    {"type": "progress" | "result" | "error" | "info", "data": ..., "request_id": ...}
"""

import sys
import json
import base64
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional, TextIO

from .config import HybridConfig, get_capabilities, validate_config
from .errors import ConfigurationError
from .ocr.base import OcrOptions

logger = logging.getLogger(__name__)


class IPCHandler:
    """Handles JSON-based IPC communication via stdin/stdout"""

    def __init__(self, config: HybridConfig, processor=None, stream: Optional[TextIO] = None):
        self.config = config
        self._processor = processor
        self.stream = stream or sys.stdout
        self.running = True
        self.cancel_event = threading.Event()
        self._write_lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None

    @property
    def processor(self):
        if self._processor is None:
            from .hybrid_processor import create_hybrid_processor
            self._processor = create_hybrid_processor(self.config)
        return self._processor

    def send_event(self, event_type: str, data: Any, request_id: Optional[str] = None):
        """Send an event via stdout"""
        event = {
            "type": event_type,
            "data": data
        }
        if request_id:
            event["request_id"] = request_id
        logger.debug(f"Sending {event_type} event (request_id: {request_id})")

        with self._write_lock:
            self.stream.write(json.dumps(event) + "\n")
            self.stream.flush()

    def send_progress(self, current: int, total: int, message: str, request_id: Optional[str] = None):
        percent = (current / total * 100) if total > 0 else 0
        self.send_event("progress", {
            "current": current,
            "total": total,
            "message": message,
            "percent": round(percent, 1)
        }, request_id=request_id)

    def send_result(self, result: Any, request_id: Optional[str] = None):
        self.send_event("result", result, request_id=request_id)

    def send_error(self, error_message: str, request_id: Optional[str] = None):
        self.send_event("error", {"message": error_message}, request_id=request_id)

    def handle_command(self, command: Dict[str, Any]):
        """Dispatch one incoming command"""
        cmd_type = command.get("command")
        request_id = command.get("request_id")
        logger.debug(f"Handling command '{cmd_type}' with request_id: {request_id}")

        if cmd_type == "extract":
            self.handle_extract(command, request_id)
        elif cmd_type == "check_needs_ocr":
            self.handle_check_needs_ocr(command, request_id)
        elif cmd_type == "capabilities":
            self.send_result(get_capabilities(self.config), request_id)
        elif cmd_type == "validate_config":
            self.send_result(validate_config(self.config), request_id)
        elif cmd_type == "cancel":
            self.handle_cancel(request_id)
        else:
            self.send_error(f"Unknown command: {cmd_type}", request_id)

    def _read_document(self, command: Dict[str, Any]) -> bytes:
        """Document bytes from "file_path" or base64 "data" """
        if command.get("data"):
            return base64.b64decode(command["data"])

        file_path = command.get("file_path")
        if not file_path:
            raise ValueError("No file_path or data provided")
        return Path(file_path).read_bytes()

    def handle_extract(self, command: Dict[str, Any], request_id: Optional[str]):
        """Start extraction on a worker thread so cancel can arrive meanwhile"""
        if self._worker is not None and self._worker.is_alive():
            self.send_error("An extraction is already running", request_id)
            return

        try:
            data = self._read_document(command)
            options = OcrOptions.from_dict(
                command.get("options"),
                language=self.config.default_language,
                density=self.config.default_density,
                format=self.config.default_format,
                max_pages_parallel=self.config.max_pages_parallel
            )
        except (OSError, ValueError) as e:
            self.send_error(f"Invalid extract request: {e}", request_id)
            return

        filename = command.get("filename") or Path(command.get("file_path") or "document.pdf").name
        self.cancel_event.clear()

        self._worker = threading.Thread(
            target=self._run_extract,
            args=(data, filename, options, request_id),
            name="hybrid-extract",
            daemon=True
        )
        self._worker.start()

    def _run_extract(self, data: bytes, filename: str, options: OcrOptions, request_id: Optional[str]):
        def progress_callback(current, total, message):
            self.send_progress(current, total, message, request_id)

        try:
            result = self.processor.process(
                data,
                filename=filename,
                options=options,
                progress_callback=progress_callback,
                cancel_event=self.cancel_event
            )
        except Exception as e:
            logger.error(f"Extraction failed: {e}", exc_info=True)
            self.send_error(f"Extraction failed: {e}", request_id)
            return

        if result.success:
            self.send_result(result.to_dict(), request_id)
        else:
            self.send_error(result.error or "Processing failed", request_id)

    def handle_check_needs_ocr(self, command: Dict[str, Any], request_id: Optional[str]):
        try:
            data = self._read_document(command)
        except (OSError, ValueError) as e:
            self.send_error(f"Invalid check_needs_ocr request: {e}", request_id)
            return
        self.send_result(self.processor.check_needs_ocr(data), request_id)

    def handle_cancel(self, request_id: Optional[str] = None):
        """Cancel the running extraction: no further OCR batches are dispatched"""
        logger.info("Cancel requested")
        self.cancel_event.set()
        self.send_event('info', {'message': 'Cancellation requested'}, request_id)

    def wait(self, timeout: Optional[float] = None):
        """Wait for a running extraction to finish"""
        if self._worker is not None:
            self._worker.join(timeout)

    def shutdown(self):
        """Release the vision service once no more commands will arrive"""
        client = getattr(self._processor, "client", None)
        if client is not None:
            client.cleanup()

    def run(self, stdin: Optional[TextIO] = None):
        """Main event loop - read commands from stdin"""
        logger.info("Hybrid extract backend started, waiting for commands...")

        try:
            for line in (stdin or sys.stdin):
                if not self.running:
                    break

                line = line.strip()
                if not line:
                    continue

                try:
                    command = json.loads(line)
                    self.handle_command(command)
                except json.JSONDecodeError as e:
                    logger.error(f"Invalid JSON: {e}")
                    self.send_error(f"Invalid JSON: {str(e)}")
                except Exception as e:
                    logger.error(f"Command handling error: {e}", exc_info=True)
                    self.send_error(str(e))

            self.wait()

        except KeyboardInterrupt:
            logger.info("Interrupted by user")
            self.cancel_event.set()
        finally:
            logger.info("Hybrid extract backend shutting down")
            self.shutdown()


def main():
    # stdout is reserved for IPC
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr
    )

    try:
        config = HybridConfig.from_env()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    IPCHandler(config).run()


if __name__ == "__main__":
    main()
