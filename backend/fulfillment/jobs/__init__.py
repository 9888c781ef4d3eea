"""
Jobs Package

Auto-reversal sweep and label integrity repair, run from the app lifespan.
"""
from fulfillment.jobs.fulfillment_jobs import FulfillmentJobRunner

__all__ = ["FulfillmentJobRunner"]
