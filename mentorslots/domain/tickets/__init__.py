"""Ticket ledger: grants, weekly issue and consumption"""
