"""Provider payload builders shared by the tests"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

# Wednesday 2024-01-03 12:00 in Tokyo
NOW = datetime(2024, 1, 3, 3, 0, tzinfo=timezone.utc)


def make_place(name, lat, lng, place_id=None, ratings=0):
    return {
        'name': name,
        'geometry': {'location': {'lat': lat, 'lng': lng}},
        'place_id': place_id or f"place-{name}",
        'user_ratings_total': ratings,
    }


def make_distance_matrix(rows):
    """rows[i][j] is seconds from origin i to destination j, or None for no route"""
    return {
        'status': 'OK',
        'rows': [
            {'elements': [
                {'status': 'OK', 'duration': {'value': seconds, 'text': ''}} if seconds is not None
                else {'status': 'ZERO_RESULTS'}
                for seconds in row
            ]}
            for row in rows
        ],
    }


def make_shop(name, **overrides):
    shop = {
        'name': name,
        'address': '東京都品川区1-1-1',
        'genre': {'name': '居酒屋'},
        'urls': {'pc': f"https://www.hotpepper.jp/{name}/"},
        'photo': {'pc': {'l': f"https://img.hotpepper.jp/{name}_l.jpg"}},
        'budget': {'name': '3001～4000円', 'average': '3500円'},
        'catch': 'Best Meat!',
    }
    shop.update(overrides)
    return shop


def hotpepper_response(shops=None, error=None):
    response = MagicMock()
    results = {'results_available': len(shops or []), 'shop': shops or []}
    if error:
        results = {'error': [{'code': 2000, 'message': error}]}
    response.json.return_value = {'results': results}
    return response
