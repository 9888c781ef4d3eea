"""Vendor fulfillment: order-line claims, shipping labels and handover."""
