"""
SearchProxy: Search-Query Recording HTTP Proxy
================================================

A forward HTTP proxy that relays traffic to origin servers unchanged while
recording the queries clients send to known search engines.

Components:
  • Recognizers – per-engine URL dialects (google, bing, yahoo, wikipedia)
  • Pipeline    – error boundary → query recorder → upstream forwarder
  • Store       – MongoDB or JSON-lines persistence of recorded queries
"""

__version__ = "1.0.0"
__app_name__ = "SearchProxy"
