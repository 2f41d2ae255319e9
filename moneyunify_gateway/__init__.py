"""
MoneyUnify mobile-money gateway

Reconciles an asynchronous payment flow (the customer approves a prompt on
their phone, out of band) with an order lifecycle that expects a definite
outcome:
1. Initiation puts a PENDING payment record next to the order
2. Client polls and a periodic sweep verify the payment with the provider
3. A single state machine moves the record to APPROVED or FAILED exactly once
"""

__version__ = "1.0.0"
