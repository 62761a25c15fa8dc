"""
                        Services Module

Business logic behind the HTTP surface. Each component takes the
request's AsyncSession explicitly; the payment gateway has Mock
(development) and Stripe (staging/production) implementations.

Services:
    - intake: validates and persists new orders
    - snapshot: line-item snapshot codec
    - catalog: selection-group and postcode lookups
    - payment: checkout sessions, payment intents, webhooks
    - reconciliation: payment outcome → order status
    - projector: persisted order → client view
"""
