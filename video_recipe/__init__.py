# video_recipe/__init__.py
