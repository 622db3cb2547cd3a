"""Page inbox submodule.

Keeps a local mirror of Facebook Page conversations in sync with Meta.

Submodules:
- identity: customer identity resolution with fallbacks
- conversations: conversation sessions (24h activity window)
- messages: idempotent message storage and receipts
- events: webhook event processing
- fetcher: live conversation/message listing from Graph
- outbound: reply relay
- pages: page credential management
"""
