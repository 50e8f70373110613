"""MCP tool registrations for the try-on server"""
