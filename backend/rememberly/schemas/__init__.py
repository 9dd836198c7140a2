# Schemas package: domain records (records.py) and HTTP shapes (api.py)
