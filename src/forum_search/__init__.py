"""Forum post search: parameters, backends, ranking and result rendering."""
