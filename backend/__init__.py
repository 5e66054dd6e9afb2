"""Service layer for the flight reservation core"""
