"""Realtime infrastructure — contact change envelopes over WebSockets.

Learn: Events flow through one of two emission sources:
1. Services → ChangeNotifier (sync mode, default)
2. PostgreSQL NOTIFY → ContactFeedObserver (feed mode)

Either way the envelope lands in the SubscriptionRegistry, which fans it
out to the owning account's room (or the shared dashboard group for
anonymous submissions). Dashboards that miss an event re-fetch over HTTP.
"""
