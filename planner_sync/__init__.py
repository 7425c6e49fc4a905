"""Inventory Planner integration for the warehouse-management system."""
