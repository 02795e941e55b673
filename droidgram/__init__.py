"""
droidgram - Telegram front-end for the Droid coding CLI
"""

__version__ = "0.1.0"
__logo__ = "🤖"
