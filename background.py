"""
Run work after a response has been sent.

The callable is attached to the response's close hook, so it starts only
once the WSGI server has written the body. By default it then runs on a
daemon thread so the worker is free for the next request.
"""

import logging
from threading import Thread

logger = logging.getLogger(__name__)


def _run_safely(func, args):
    try:
        func(*args)
    except Exception:
        logger.exception(f"Background task {getattr(func, '__name__', func)} failed")


def run_after_response(response, func, *args, threaded=True):
    def _start():
        if threaded:
            thread = Thread(target=_run_safely, args=(func, args))
            thread.daemon = True
            thread.start()
        else:
            _run_safely(func, args)

    response.call_on_close(_start)
    return response
