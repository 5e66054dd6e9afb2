"""Tests package"""
