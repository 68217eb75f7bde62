import pytest

from library_app.errors import ForbiddenError, NotFoundError, ValidationFailedError


def test_create_and_list_reviews(reviews, reader, other_reader, make_book):
    book = make_book()
    first = reviews.create_review(reader.email, book.id, 5, "Loved it")
    second = reviews.create_review(other_reader.email, book.id, 2)

    assert first.user_name == "Ada Reader"
    assert [r.id for r in reviews.get_reviews_for_book(book.id)] == [second.id, first.id]
    assert [r.id for r in reviews.get_reviews_for_email(reader.email)] == [first.id]
    assert len(reviews.get_all_reviews()) == 2


def test_average_rating(reviews, reader, other_reader, make_book):
    book = make_book()
    assert reviews.get_average_rating_for_book(book.id) == 0.0

    reviews.create_review(reader.email, book.id, 4)
    reviews.create_review(other_reader.email, book.id, 1)
    assert reviews.get_average_rating_for_book(book.id) == pytest.approx(2.5)


@pytest.mark.parametrize("rating", [0, 6])
def test_rating_out_of_range(reviews, reader, make_book, rating):
    with pytest.raises(ValidationFailedError):
        reviews.create_review(reader.email, make_book().id, rating)


def test_review_for_missing_book(reviews, reader):
    with pytest.raises(NotFoundError):
        reviews.create_review(reader.email, 31, 3)


def test_delete_review_permissions(reviews, reader, other_reader, librarian, make_book):
    book = make_book()
    mine = reviews.create_review(reader.email, book.id, 3)
    also_mine = reviews.create_review(reader.email, book.id, 4)

    with pytest.raises(ForbiddenError):
        reviews.delete_review(mine.id, other_reader.email)

    reviews.delete_review(mine.id, reader.email)
    reviews.delete_review(also_mine.id, librarian.email)
    assert reviews.get_all_reviews() == []


def test_deleting_a_book_deletes_its_reviews(reviews, catalog, reader, make_book):
    book = make_book()
    reviews.create_review(reader.email, book.id, 5)
    catalog.delete_book(book.id)
    assert reviews.get_all_reviews() == []
