"""Storefront payment core: checkout, webhooks, order fulfillment and invoice reconciliation"""
