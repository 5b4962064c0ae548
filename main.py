from mealsection import create_app

app = create_app()
