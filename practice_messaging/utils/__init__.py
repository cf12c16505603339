"""Utility helpers"""
from practice_messaging.utils.business_hours import is_business_hours
from practice_messaging.utils.phone import format_phone_number, is_valid_phone_number, digits_only

__all__ = ["is_business_hours", "format_phone_number", "is_valid_phone_number", "digits_only"]
