"""Slot templates, single slots and break toggling"""
