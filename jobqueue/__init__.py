"""Background job queue and scheduler"""
