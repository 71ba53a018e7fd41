"""
Expo Supervisor - process supervision for Expo and EAS command-line tools.

Runs bounded one-shot CLI commands and long-lived interactive sessions
(dev servers, local native builds), captures and classifies their output,
and exposes everything over a REST API.
"""

__version__ = "0.1.0"
