# HTTP control surface for the automation engine (FastAPI).
