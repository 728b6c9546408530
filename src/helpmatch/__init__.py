"""HelpMatch — connects people who need support with people offering it.

Receivers send help requests to helpers. When a helper accepts, the
pair is matched and gets a persistent, real-time chat channel.
"""

__version__ = "0.1.0"
