"""Config hot-reload controller.

Watches configuration artifacts of a docker-compose deployment and keeps it
healthy when they change:
 - classifies each file change by severity and affected services
 - restarts (or signals) the affected containers in dependency order
 - maintains one aggregate status for the whole deployment

Live updates are pushed to WebSocket clients; an HTTP API allows manual restarts.
"""
