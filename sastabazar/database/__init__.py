"""DynamoDB stores for orders, carts and products"""
