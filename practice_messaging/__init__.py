"""Practice Messaging - conversation, notification and WhatsApp pipeline"""
__version__ = "1.0.0"
